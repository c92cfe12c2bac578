from . import collection, records, relations
