"""DocSpace hierarchy — document store, structural mutations and the per-user tree."""
