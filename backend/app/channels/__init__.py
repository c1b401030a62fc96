"""Channel listing, creation and persisted membership over HTTP."""
