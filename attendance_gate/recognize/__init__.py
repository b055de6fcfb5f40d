"""Detection, matching and attendance decision components."""
