from .introspection import SchemaIntrospector
from .relationships import RelationshipMapper

__all__ = ['SchemaIntrospector', 'RelationshipMapper']
