"""HTTP routers for availability, meetings and conferencing status."""
