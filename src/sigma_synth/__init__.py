"""
Sigma Synth - Sigma detection rules synthesized from ATT&CK and public rule corpora.

This package combines three inputs into Sigma rules:

- A local catalogue of log sources (product/service/category)
- The MITRE ATT&CK technique and threat-actor graph
- An index of external detection rules harvested from Elastic
  detection-rules, Splunk security_content and SigmaHQ

References:
    - Sigma rule format: https://sigmahq.io/docs/basics/rules.html
    - MITRE ATT&CK: https://attack.mitre.org/
"""

__version__ = "0.1.0"
__all__ = ["__version__"]
