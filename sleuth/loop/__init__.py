"""Generic decide -> act -> accumulate -> check loop.

A domain plugs in by providing a `Toolset` (decision schema, bootstrap, tool handlers)
and a `KnowledgeState` subclass (merge + snapshot rendering). The `LoopController`
drives iterations strictly sequentially: each oracle prompt depends on the state
mutated by the previous iteration.
"""
