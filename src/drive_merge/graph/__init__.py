"""Microsoft Graph remote store client."""
