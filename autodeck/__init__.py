"""
Autodeck - Turn source documents and a short briefing into a deck of written cards.

A human-gated, three-agent pipeline:
1. Planner decomposes the documents into a card plan (or reports conflicts)
2. The user reviews the plan: excludes cards, answers decision questions, comments
3. Finalizer bakes the resolved decisions into per-card guidance
4. Producer writes the card content in bounded batches
5. The written cards are appended to the collection's card list

Usage:
    autodeck init                 # Write a sample autodeck.yml
    autodeck collections create   # Create a document collection
    autodeck docs add             # Add a source document to a collection
    autodeck deck run             # Plan (and optionally produce) a deck
    autodeck web                  # Start the HTTP API
"""

__version__ = "0.1.0"
__author__ = "Autodeck"
