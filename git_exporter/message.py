"""
Commit messages with ``Name: Value`` label lines.

A message is a text part followed, optionally, by a label group: the last
paragraph of the message when every line in it is a label and it is not the
only paragraph. Labels elsewhere in the text are treated as prose.
"""

import re

LABEL_SEPARATOR = ": "

# Name, then either ": " or "=", then the value
LABEL_PATTERN = re.compile(r"^(?P<name>[\w-]+)(?P<separator>: |=)(?P<value>.*)$")


class LabelFinder:
    """A single ``Name<separator>Value`` line."""

    def __init__(self, line: str):
        self.line = line
        self._match = LABEL_PATTERN.match(line)

    @classmethod
    def of(cls, name: str, value: str, separator: str = LABEL_SEPARATOR) -> "LabelFinder":
        return cls(f"{name}{separator}{value}")

    def is_label(self) -> bool:
        return self._match is not None

    def is_label_named(self, name: str) -> bool:
        return self.is_label() and self.name == name

    def _group(self, group: str) -> str:
        if self._match is None:
            raise ValueError(f"Not a label: '{self.line}'")
        return self._match.group(group)

    @property
    def name(self) -> str:
        return self._group("name")

    @property
    def separator(self) -> str:
        return self._group("separator")

    @property
    def value(self) -> str:
        return self._group("value")

    def __eq__(self, other: object) -> bool:
        return isinstance(other, LabelFinder) and other.line == self.line

    def __hash__(self) -> int:
        return hash(self.line)

    def __repr__(self) -> str:
        return f"LabelFinder({self.line!r})"


class ChangeMessage:
    """A parsed commit message that labels can be added to or removed from."""

    def __init__(self, text: str, labels: list[LabelFinder] | None = None):
        self.text = text
        self.labels: list[LabelFinder] = list(labels or [])

    @classmethod
    def parse_message(cls, message: str) -> "ChangeMessage":
        """Split a message into its text and its trailing label group."""
        message = message.strip("\n")
        paragraphs = re.split(r"\n\s*\n", message)
        # The first paragraph is always text, even if it looks like "fix: typo"
        if len(paragraphs) < 2:
            return cls(message)
        last = [LabelFinder(line) for line in paragraphs[-1].splitlines()]
        if last and all(label.is_label() for label in last):
            text = message[: message.rfind(paragraphs[-1])].rstrip("\n")
            return cls(text, last)
        return cls(message)

    def labels_as_multimap(self) -> dict[str, list[str]]:
        """Label values grouped by name, in the order they appear."""
        result: dict[str, list[str]] = {}
        for label in self.labels:
            result.setdefault(label.name, []).append(label.value)
        return result

    def label_values(self, name: str) -> list[str]:
        return self.labels_as_multimap().get(name, [])

    def add_label(self, name: str, separator: str, value: str) -> "ChangeMessage":
        """Set a label, replacing any line with the same name.

        The new line always goes last, so it is also the occurrence readers
        pick when they take the last value of a label.
        """
        self.remove_label(name)
        self.labels.append(LabelFinder.of(name, value, separator))
        return self

    def add_label_if_absent(self, name: str, separator: str, value: str) -> "ChangeMessage":
        if name not in self.labels_as_multimap():
            self.labels.append(LabelFinder.of(name, value, separator))
        return self

    def remove_label(self, name: str) -> "ChangeMessage":
        self.labels = [label for label in self.labels if label.name != name]
        return self

    def first_line(self) -> str:
        return self.text.split("\n", 1)[0]

    def __str__(self) -> str:
        if not self.labels:
            return self.text + "\n"
        labels = "\n".join(label.line for label in self.labels)
        if not self.text:
            return labels + "\n"
        return f"{self.text}\n\n{labels}\n"
