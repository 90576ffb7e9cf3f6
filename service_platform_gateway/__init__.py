"""Platform access-and-authorization gateway for the portal."""
