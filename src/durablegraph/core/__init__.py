"""Core engine: state model, graph definition, executor, suspend/resume."""
