import textwrap
from io import StringIO


class CodeTemplate:
    """C source fragment with ``{name}`` placeholders, dedented once."""

    def __init__(self, template_text: str):
        self.template = textwrap.dedent(template_text)

    def render(self, **values) -> str:
        output = self.template
        for key, value in values.items():
            output = output.replace("{%s}" % key, str(value))
        return output


class WriteCode:
    """Line-oriented C source writer with four-space indentation levels."""

    def __init__(self):
        self.indent = " " * 4
        self.base_level = 0
        self.output = StringIO()

    def getvalue(self) -> str:
        return self.output.getvalue()

    def emptyLine(self):
        self.output.write("\n")

    def addLevel(self, delta):
        level = self.base_level
        self.base_level += delta
        if self.base_level < 0:
            raise ValueError("Negative indentation level in addLevel()")
        return level

    def restoreLevel(self, level):
        if level < 0:
            raise ValueError("Negative indentation level in restoreLevel()")
        self.base_level = level

    def write(self, level, text):
        self.output.write(self.indent * (self.base_level + level) + text + "\n")

    def writeRaw(self, text: str):
        """Append already formatted text (e.g. another writer's content)."""
        self.output.write(text)
