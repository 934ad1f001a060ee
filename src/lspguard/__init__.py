"""lspguard - launch a language server and hand its stdout to LSP clients with stray output removed."""

__version__ = "0.3.1"
