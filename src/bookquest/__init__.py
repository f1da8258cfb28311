"""BookQuest: turn books into branching text adventures."""

__version__ = "0.1.0"
