"""Land registry modules: parcels, owners, encumbrances and lease billing."""
