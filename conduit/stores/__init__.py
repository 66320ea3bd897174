# Stores package.
#
# Each module exposes one store class that owns persistence for a slice
# of the domain:
#
#   article_store: articles, tags, comments and the favorite relation
#   user_store   : users and the follow graph
#   queries      : shared transaction helper and article query building
#
# Stores are constructed with an ``async_sessionmaker`` and open their own
# sessions, so every transaction boundary lives inside a store method.
from conduit.stores.article_store import ArticleStore
from conduit.stores.user_store import UserStore

__all__ = ["ArticleStore", "UserStore"]
