"""Wire schemas shared by the task-board server and its consumers."""
