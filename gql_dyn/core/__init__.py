"""Core modules for dynamic GraphQL document building and dispatch."""

from .auth import (
    Auth,
    BearerAuth,
    HeaderAuth,
    NoAuth,
)
from .catalog import (
    Catalog,
    EntityDescriptor,
    OperationDescriptor,
    RelationDescriptor,
)
from .errors import (
    CatalogError,
    ErrorKind,
    GqlDynError,
    GraphQLError,
    MalformedIncludeError,
    StaleResponseError,
)
from .executor import ClientConfig, GraphQLClient, Subscription
from .hooks import ProgressHook, RetryHook, RetryOnErrorKinds
from .includes import Exclude, Keyed, MalformedInclude, Wildcard, parse_include
from .introspection import (
    build_definitions,
    definitions_from_schema,
    definitions_from_sdl,
    fetch_definitions,
    write_definitions,
)
from .query_builder import (
    UNSET,
    BatchDocument,
    BatchOperation,
    Document,
    FieldResolver,
    FragmentSet,
    ParameterAccumulator,
    QueryBuilder,
    SubOperation,
)
from .result import Lapsed, is_error, is_lapsed, normalize, unwrap
from .subscriptions import SubscriptionManager
from .transport import HttpTransport, Transport, Upload

__all__ = [
    # Auth
    "Auth",
    "BearerAuth",
    "HeaderAuth",
    "NoAuth",
    # Catalog
    "Catalog",
    "EntityDescriptor",
    "OperationDescriptor",
    "RelationDescriptor",
    # Errors
    "CatalogError",
    "ErrorKind",
    "GqlDynError",
    "GraphQLError",
    "MalformedIncludeError",
    "StaleResponseError",
    # Client
    "ClientConfig",
    "GraphQLClient",
    "Subscription",
    "SubscriptionManager",
    # Hooks
    "ProgressHook",
    "RetryHook",
    "RetryOnErrorKinds",
    # Includes
    "Exclude",
    "Keyed",
    "MalformedInclude",
    "Wildcard",
    "parse_include",
    # Definitions
    "build_definitions",
    "definitions_from_schema",
    "definitions_from_sdl",
    "fetch_definitions",
    "write_definitions",
    # Query Builder
    "UNSET",
    "BatchDocument",
    "BatchOperation",
    "Document",
    "FieldResolver",
    "FragmentSet",
    "ParameterAccumulator",
    "QueryBuilder",
    "SubOperation",
    # Results
    "Lapsed",
    "is_error",
    "is_lapsed",
    "normalize",
    "unwrap",
    # Transport
    "HttpTransport",
    "Transport",
    "Upload",
]
