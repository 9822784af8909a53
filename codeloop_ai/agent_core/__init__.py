"""Agent execution engine: turn loop, tool pipeline, permissions and session store."""
