"""Qt-facing services for the Hundred Days Tracker."""
