"""
Tokenizer for the free-text extra arguments field.

Rules:
- Unquoted whitespace separates tokens.
- A double quote toggles a literal span; whitespace inside it is kept.
  The quote characters themselves are dropped.
- There are no escape sequences. A backslash is an ordinary character.
- An unterminated quote runs to the end of the string.
- Empty tokens are dropped, so ``""`` on its own yields nothing.

Example:
    >>> split_arguments('-tp 0.0 --prompt "hello world"')
    ['-tp', '0.0', '--prompt', 'hello world']
"""

from typing import List


def split_arguments(text: str) -> List[str]:
    tokens: List[str] = []
    current: List[str] = []
    in_quotes = False

    for char in text or "":
        if char == '"':
            in_quotes = not in_quotes
        elif char.isspace() and not in_quotes:
            if current:
                tokens.append("".join(current))
                current = []
        else:
            current.append(char)

    if current:
        tokens.append("".join(current))
    return tokens
