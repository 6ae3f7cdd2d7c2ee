"""uploadcue-sim - Drive an upload queue through flaky uploads and connectivity."""
