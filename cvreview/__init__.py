"""Expert availability, slot booking and meeting lifecycle for the CV review marketplace."""
