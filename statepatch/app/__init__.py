"""Application composition layer.

Settings persistence and the composition root that wires adapters and use
cases into a runnable service graph, without placing business logic here.
"""
