"""HTTP surface of ssogate."""
