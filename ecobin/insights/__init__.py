"""
EcoBin Insight Generation.

Components:
- templates: deterministic text for each insight category
- generator: per-bin bundles and current-insight supersession
"""
