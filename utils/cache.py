from cachetools import LRUCache
# In memory caches
plan_cache = LRUCache(maxsize=256)  # query plans by (north, south, west, east, zoom)
