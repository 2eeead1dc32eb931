"""trackdown: epics, issues, tasks and pull requests stored as text files."""
