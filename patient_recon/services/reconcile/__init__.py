"""Reconcile a partner patient CSV against the patients table.

Two stages run as separate processes:

- reconcile: parse the CSV, resolve emails in one bulk query, write the
  annotated CSV and the pending-insert batch.
- insert: replay the pending-insert batch, skipping ids already stored.
"""
