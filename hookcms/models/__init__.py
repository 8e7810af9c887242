from .auth import AuthProvider, OAuthState, RefreshToken, RevokedToken, UserProvider
from .option import Option
from .plugin_migration import PluginMigration
from .post import Post, PostMeta, PostType, PostTypeField, post_authors
from .taxonomy import Taxonomy, TaxonomyField, Term, TermMeta, TermRelationship
from .user import Capability, CapabilityInheritance, Role, User, role_capabilities, user_capabilities, user_roles

__all__ = [
    "AuthProvider",
    "Capability",
    "CapabilityInheritance",
    "OAuthState",
    "Option",
    "PluginMigration",
    "Post",
    "PostMeta",
    "PostType",
    "PostTypeField",
    "RefreshToken",
    "RevokedToken",
    "Role",
    "Taxonomy",
    "TaxonomyField",
    "Term",
    "TermMeta",
    "TermRelationship",
    "User",
    "UserProvider",
    "post_authors",
    "role_capabilities",
    "user_capabilities",
    "user_roles",
]
