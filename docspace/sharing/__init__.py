"""DocSpace sharing — invitations and the sharing workflow."""
