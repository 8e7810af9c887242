import re

from unidecode import unidecode


def slugify(text, separator="-"):
    text = unidecode(str(text)).lower()
    text = re.sub(r"[^a-z0-9]+", separator, text).strip(separator)
    return text
