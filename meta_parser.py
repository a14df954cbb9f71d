import os
import re


class MetaParser:
    """Reads the fields of a plugin's _meta.lua descriptor without running Lua.

    Only literal values are understood: quoted strings, long strings
    ([[...]]), gettext-wrapped strings (_("...")) and numbers, which are
    returned as their source text.
    """

    FIELDS = ('name', 'fullname', 'description', 'version')

    _LONG_STRING = re.compile(r'\[(=*)\[(.*?)\]\1\]', re.S)
    _QUOTED_STRING = re.compile(r'(["\'])((?:\\.|(?!\1).)*)\1', re.S)
    _NUMBER = re.compile(r'-?\d+(?:\.\d+)?')
    _ESCAPES = {'n': '\n', 't': '\t', '\\': '\\', '"': '"', "'": "'"}

    def __init__(self, meta_path):
        self.meta_path = meta_path
        self.name = None
        self.fullname = None
        self.description = None
        self.version = None

    def parse(self):
        if not os.path.isfile(self.meta_path):
            return False

        try:
            with open(self.meta_path, 'r', encoding='utf-8', errors='replace') as f:
                content = f.read()
        except OSError:
            return False

        # Descriptors return a table; anything else is not a plugin descriptor
        if 'return' not in content or '{' not in content:
            return False

        for field in self.FIELDS:
            setattr(self, field, self._read_field(content, field))

        return True

    def _read_field(self, content, field):
        match = re.search(rf'^\s*{field}\s*=\s*', content, re.M)
        if not match:
            return None

        rest = content[match.end():]
        # Strip gettext wrapper: _("...") or _([[...]])
        wrapped = re.match(r'_\s*\(\s*', rest)
        if wrapped:
            rest = rest[wrapped.end():]

        long_string = self._LONG_STRING.match(rest)
        if long_string:
            return long_string.group(2).strip()

        quoted = self._QUOTED_STRING.match(rest)
        if quoted:
            return self._unescape(quoted.group(2))

        # '1.10' stays '1.10'
        number = self._NUMBER.match(rest)
        if number:
            return number.group(0)

        return None

    def _unescape(self, value):
        return re.sub(r'\\(.)', lambda m: self._ESCAPES.get(m.group(1), m.group(1)), value)
