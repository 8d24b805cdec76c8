"""File watcher component: debounced, incremental index updates."""
