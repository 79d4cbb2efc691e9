"""
EcoBin Anomaly Detection.

Components:
- severity: ratio-based severity classification
- rules: independently evaluable detection rules
- detector: per-bin window evaluation, dedupe and persistence
"""
