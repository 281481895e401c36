"""Graph construction, forward evaluation and thread fan-out for mteval.

A single ParameterStore is allocated once, frozen, and then read by every
ClassifierGraph built from it, one graph per worker thread.
"""
