"""Parcels, owners, ownership links and encumbrances."""
