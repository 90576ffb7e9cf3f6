"""
Gateway caching package.

Holds the application route cache. Prefer short-lived caches with a
single in-flight refresh and explicit invalidation.
"""
