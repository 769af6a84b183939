"""Institution hierarchy migration and Firestore/PostgreSQL reconciliation."""
