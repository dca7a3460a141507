"""Payment-gateway webhooks.

Receives gateway webhooks; each one is signature-verified, deduplicated,
and applied to its order synchronously.
"""
