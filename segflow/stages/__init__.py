"""Pipeline steps: deduplication, filtering, summarization, embedding, graph extraction.

Each module exposes a ``make_*_step`` factory returning a
:class:`segflow.lifecycle.Step`; the composite module chains them.
"""
