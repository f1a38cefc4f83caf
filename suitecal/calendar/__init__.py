"""Calendar domain: models, recurrence expansion, overlay, materialization and queries."""
