### Transit network record kinds, identifier references between them and per-kind policies

import itertools as it, operator as op, functools as ft
from collections import OrderedDict
import enum, decimal

from .. import utils as u
from .collection import Collection, CollectionWithId


@u.attr_struct
class Ref:
	'''Identifier-valued field, referencing record(s) in another collection.
		target is either a collection (kind) name or a function returning one
			for specific record, or None if field value isn't a reference there.
		Fields can hold one identifier (or None, if optional), a tuple of them (many=True),
			or a tuple of structs with identifier in "item" attribute (e.g. stop_times).
		Records are immutable, so rewrite/unlink return updated copies.
		Refs with a weight are used for relation graph traversal,
			lower weight means preferred path through that relation.'''

	field = u.attr_init()
	target = u.attr_init()
	optional = u.attr_init(False)
	many = u.attr_init(False)
	item = u.attr_init(None)
	weight = u.attr_init(None)

	@property
	def polymorphic(self): return callable(self.target)

	def target_for(self, record):
		return self.target(record) if callable(self.target) else self.target

	def values(self, record):
		'(label, identifier) tuples for every reference slot in record, None for unset scalar.'
		if self.target_for(record) is None: return
		v = getattr(record, self.field)
		if self.item:
			for n, item in enumerate(v):
				yield '{}[{}].{}'.format(self.field, n, self.item), getattr(item, self.item)
		elif self.many:
			for n, ident in enumerate(v): yield '{}[{}]'.format(self.field, n), ident
		else: yield self.field, v

	def ids(self, record):
		'Ordered unique identifiers that record references via this field.'
		return list(OrderedDict.fromkeys(
			ident for label, ident in self.values(record) if ident is not None ))

	def rewrite(self, record, func):
		'Returns copy of record with every identifier in the field replaced by func(identifier).'
		if self.target_for(record) is None: return record
		v = getattr(record, self.field)
		if self.item:
			v = tuple(u.attr.evolve(item, **{self.item: func(getattr(item, self.item))}) for item in v)
		elif self.many: v = tuple(map(func, v))
		elif v is not None: v = func(v)
		return u.attr.evolve(record, **{self.field: v})

	def unlink(self, record, ident):
		'Returns copy of record with (dangling) identifier removed from optional field.'
		assert self.optional and not self.item, self
		v = getattr(record, self.field)
		if self.many: v = tuple(ident2 for ident2 in v if ident2 != ident)
		elif v == ident: v = None
		return u.attr.evolve(record, **{self.field: v})


class Availability(enum.IntEnum):
	unknown = 0
	available = 1
	not_available = 2

class StopType(enum.Enum):
	point = 'point'
	zone = 'zone'

class CommentType(enum.Enum):
	information = 'information'
	on_demand_transport = 'on_demand_transport'

class ObjectType(enum.Enum):
	line = 'line'
	network = 'network'

class PerimeterAction(enum.Enum):
	included = 'included'
	excluded = 'excluded'

class RestrictionType(enum.Enum):
	zone = 'zone'
	origin_destination = 'origin_destination'

def decimal_value(v):
	return v if isinstance(v, decimal.Decimal) else decimal.Decimal(str(v))

def coord_value(v):
	return v if v is None else tuple(map(float, v))

def seq_value(v):
	# Records are shared between collections, so nested lists become tuples too
	return tuple((seq_value(v2) if isinstance(v2, list) else v2) for v2 in v)

availability = lambda: u.attr_init(Availability.unknown, converter=Availability)
seq = lambda: u.attr_init(tuple, converter=seq_value)
comment_links_ref = Ref('comment_links', 'comments', optional=True, many=True)
geometry_ref = Ref('geometry_id', 'geometries', optional=True)
equipment_ref = Ref('equipment_id', 'equipments', optional=True)


@u.attr_struct(frozen=True)
class Contributor:
	id = u.attr_init()
	name = u.attr_init(None)
	license = u.attr_init(None)
	website = u.attr_init(None)
	refs = ()

@u.attr_struct(frozen=True)
class Dataset:
	id = u.attr_init()
	contributor_id = u.attr_init()
	start_date = u.attr_init(None)
	end_date = u.attr_init(None)
	desc = u.attr_init(None)
	system = u.attr_init(None)
	refs = Ref('contributor_id', 'contributors', weight=1),

@u.attr_struct(frozen=True)
class Network:
	id = u.attr_init()
	name = u.attr_init()
	url = u.attr_init(None)
	timezone = u.attr_init(None)
	lang = u.attr_init(None)
	phone = u.attr_init(None)
	address = u.attr_init(None)
	sort_order = u.attr_init(None)
	codes = seq()
	comment_links = seq()
	refs = comment_links_ref,

@u.attr_struct(frozen=True)
class CommercialMode:
	id = u.attr_init()
	name = u.attr_init()
	refs = ()

@u.attr_struct(frozen=True)
class PhysicalMode:
	id = u.attr_init()
	name = u.attr_init()
	co2_emission = u.attr_init(None)
	refs = ()

@u.attr_struct(frozen=True)
class Company:
	id = u.attr_init()
	name = u.attr_init()
	address = u.attr_init(None)
	url = u.attr_init(None)
	mail = u.attr_init(None)
	phone = u.attr_init(None)
	comment_links = seq()
	refs = comment_links_ref,

@u.attr_struct(frozen=True)
class Equipment:
	id = u.attr_init()
	wheelchair_boarding = availability()
	sheltered = availability()
	elevator = availability()
	escalator = availability()
	bike_accepted = availability()
	bike_depot = availability()
	visual_announcement = availability()
	audible_announcement = availability()
	refs = ()

@u.attr_struct(frozen=True)
class TripProperty:
	id = u.attr_init()
	wheelchair_accessible = availability()
	bike_accepted = availability()
	air_conditioned = availability()
	visual_announcement = availability()
	audible_announcement = availability()
	appropriate_escort = availability()
	appropriate_signage = availability()
	refs = ()

@u.attr_struct(frozen=True)
class Comment:
	id = u.attr_init()
	name = u.attr_init()
	comment_type = u.attr_init(CommentType.information, converter=CommentType)
	label = u.attr_init(None)
	url = u.attr_init(None)
	refs = ()

@u.attr_struct(frozen=True)
class Geometry:
	id = u.attr_init()
	wkt = u.attr_init()
	refs = ()

@u.attr_struct(frozen=True)
class Calendar:
	id = u.attr_init()
	dates = u.attr_init(frozenset, converter=frozenset)
	refs = ()


@u.attr_struct(frozen=True)
class StopArea:
	id = u.attr_init()
	name = u.attr_init()
	coord = u.attr_init(None, converter=coord_value) # (lon, lat)
	timezone = u.attr_init(None)
	visible = u.attr_init(True)
	geometry_id = u.attr_init(None)
	equipment_id = u.attr_init(None)
	codes = seq()
	object_properties = seq()
	comment_links = seq()
	refs = geometry_ref, equipment_ref, comment_links_ref

@u.attr_struct(frozen=True)
class StopPoint:
	id = u.attr_init()
	name = u.attr_init()
	stop_area_id = u.attr_init()
	coord = u.attr_init(None, converter=coord_value) # (lon, lat)
	code = u.attr_init(None)
	platform_code = u.attr_init(None)
	fare_zone_id = u.attr_init(None)
	timezone = u.attr_init(None)
	visible = u.attr_init(True)
	stop_type = u.attr_init(StopType.point, converter=StopType)
	geometry_id = u.attr_init(None)
	equipment_id = u.attr_init(None)
	codes = seq()
	object_properties = seq()
	comment_links = seq()
	refs = ( Ref('stop_area_id', 'stop_areas', weight=1),
		geometry_ref, equipment_ref, comment_links_ref )


@u.attr_struct(frozen=True)
class Line:
	id = u.attr_init()
	name = u.attr_init()
	network_id = u.attr_init()
	commercial_mode_id = u.attr_init()
	code = u.attr_init(None)
	forward_name = u.attr_init(None)
	backward_name = u.attr_init(None)
	color = u.attr_init(None)
	text_color = u.attr_init(None)
	sort_order = u.attr_init(None)
	opening_time = u.attr_init(None)
	closing_time = u.attr_init(None)
	geometry_id = u.attr_init(None)
	codes = seq()
	object_properties = seq()
	comment_links = seq()
	refs = ( Ref('network_id', 'networks', weight=1),
		Ref('commercial_mode_id', 'commercial_modes', weight=1),
		geometry_ref, comment_links_ref )

@u.attr_struct(frozen=True)
class Route:
	id = u.attr_init()
	name = u.attr_init()
	line_id = u.attr_init()
	direction_type = u.attr_init(None)
	destination_id = u.attr_init(None)
	geometry_id = u.attr_init(None)
	codes = seq()
	object_properties = seq()
	comment_links = seq()
	refs = ( Ref('line_id', 'lines', weight=1),
		Ref('destination_id', 'stop_areas', optional=True),
		geometry_ref, comment_links_ref )


@u.attr_struct(frozen=True)
class StopTime:
	'Stop of a Trip, only identified by its position in Trip.stop_times.'
	stop_point_id = u.attr_init()
	sequence = u.attr_init()
	arrival_time = u.attr_init() # seconds from service day start, can be >24h
	departure_time = u.attr_init()
	boarding_duration = u.attr_init(0)
	alighting_duration = u.attr_init(0)
	pickup_type = u.attr_init(0)
	drop_off_type = u.attr_init(0)
	local_zone_id = u.attr_init(None)
	headsign = u.attr_init(None)

@u.attr_struct(frozen=True)
class Trip:
	id = u.attr_init()
	route_id = u.attr_init()
	calendar_id = u.attr_init()
	physical_mode_id = u.attr_init()
	dataset_id = u.attr_init()
	company_id = u.attr_init()
	headsign = u.attr_init(None)
	short_name = u.attr_init(None)
	block_id = u.attr_init(None)
	trip_property_id = u.attr_init(None)
	geometry_id = u.attr_init(None)
	stop_times = seq()
	codes = seq()
	object_properties = seq()
	comment_links = seq()
	refs = ( Ref('route_id', 'routes', weight=1),
		Ref('calendar_id', 'calendars', weight=1),
		Ref('physical_mode_id', 'physical_modes', weight=1),
		Ref('dataset_id', 'datasets', weight=1),
		Ref('company_id', 'companies', weight=1),
		# Slightly higher weight makes line->route->trip paths preferred over stops
		Ref('stop_times', 'stop_points', many=True, item='stop_point_id', weight=1.9),
		Ref('trip_property_id', 'trip_properties', optional=True),
		geometry_ref, comment_links_ref )

@u.attr_struct(frozen=True)
class Frequency:
	trip_id = u.attr_init()
	start_time = u.attr_init()
	end_time = u.attr_init()
	headway_secs = u.attr_init()
	refs = Ref('trip_id', 'trips'),

@u.attr_struct(frozen=True)
class Transfer:
	from_stop_id = u.attr_init()
	to_stop_id = u.attr_init()
	min_transfer_time = u.attr_init(None)
	real_min_transfer_time = u.attr_init(None)
	equipment_id = u.attr_init(None)
	refs = ( Ref('from_stop_id', 'stop_points'),
		Ref('to_stop_id', 'stop_points'), equipment_ref )


def perimeter_target(record):
	return {ObjectType.line: 'lines', ObjectType.network: 'networks'}[record.object_type]

def restriction_target(record):
	# Zone restrictions reference fare zone ids, which aren't records
	if record.restriction_type is RestrictionType.origin_destination: return 'stop_areas'

@u.attr_struct(frozen=True)
class Ticket:
	id = u.attr_init()
	name = u.attr_init()
	comment_id = u.attr_init(None)
	refs = Ref('comment_id', 'comments', optional=True),

@u.attr_struct(frozen=True)
class TicketPrice:
	ticket_id = u.attr_init()
	price = u.attr_init(converter=decimal_value)
	currency = u.attr_init()
	validity_start = u.attr_init(None)
	validity_end = u.attr_init(None)
	refs = Ref('ticket_id', 'tickets'),

@u.attr_struct(frozen=True)
class TicketUse:
	id = u.attr_init()
	ticket_id = u.attr_init()
	max_transfers = u.attr_init(None)
	boarding_time_limit = u.attr_init(None)
	alighting_time_limit = u.attr_init(None)
	refs = Ref('ticket_id', 'tickets'),

@u.attr_struct(frozen=True)
class TicketUsePerimeter:
	ticket_use_id = u.attr_init()
	object_type = u.attr_init(converter=ObjectType)
	object_id = u.attr_init()
	perimeter_action = u.attr_init(PerimeterAction.included, converter=PerimeterAction)
	refs = Ref('ticket_use_id', 'ticket_uses'), Ref('object_id', perimeter_target)

@u.attr_struct(frozen=True)
class TicketUseRestriction:
	ticket_use_id = u.attr_init()
	restriction_type = u.attr_init(converter=RestrictionType)
	use_origin = u.attr_init()
	use_destination = u.attr_init()
	refs = ( Ref('ticket_use_id', 'ticket_uses'),
		Ref('use_origin', restriction_target), Ref('use_destination', restriction_target) )



class OrphanPolicy(enum.Enum):
	'What happens to a record when one of its required references disappears.'
	root = 'root' # kind has no required references, so can't be orphaned
	error = 'error' # orphan is a data error, prune raises OrphanPolicyViolation
	drop = 'drop' # orphan is silently removed

@u.attr_struct
class Kind:
	'''Registry entry for a record kind and its collection.
		keyed - records have unique "id" attribute, otherwise addressed by position only.
		dedup - value-like records, which are merged by content, regardless of id.
		sanitize - records can be removed by sanitize() when nothing references them.'''

	name = u.attr_init()
	record = u.attr_init()
	orphans = u.attr_init(converter=OrphanPolicy)
	keyed = u.attr_init(True)
	dedup = u.attr_init(False)
	sanitize = u.attr_init(False)

	@property
	def refs(self): return self.record.refs

	def new_collection(self, records=None):
		return (CollectionWithId if self.keyed else Collection)(self.name, records)

	def ident(self, idx, record):
		'Identifier to report record by - its id or position, if kind is not keyed.'
		return record.id if self.keyed else idx


# Ordering is the loading order - referenced kinds are before referencing ones
KINDS = [
	Kind('contributors', Contributor, 'root', sanitize=True),
	Kind('datasets', Dataset, 'error', sanitize=True),
	Kind('networks', Network, 'root', sanitize=True),
	Kind('commercial_modes', CommercialMode, 'root', sanitize=True),
	Kind('physical_modes', PhysicalMode, 'root', sanitize=True),
	Kind('companies', Company, 'root', sanitize=True),
	Kind('equipments', Equipment, 'root', dedup=True, sanitize=True),
	Kind('trip_properties', TripProperty, 'root', dedup=True, sanitize=True),
	Kind('comments', Comment, 'root', dedup=True, sanitize=True),
	Kind('geometries', Geometry, 'root', dedup=True, sanitize=True),
	Kind('calendars', Calendar, 'root', dedup=True, sanitize=True),
	Kind('stop_areas', StopArea, 'root', sanitize=True),
	Kind('stop_points', StopPoint, 'error', sanitize=True),
	Kind('lines', Line, 'error', sanitize=True),
	Kind('routes', Route, 'drop', sanitize=True),
	Kind('trips', Trip, 'drop'),
	Kind('frequencies', Frequency, 'drop', keyed=False),
	Kind('transfers', Transfer, 'drop', keyed=False),
	Kind('tickets', Ticket, 'root', sanitize=True),
	Kind('ticket_prices', TicketPrice, 'drop', keyed=False),
	Kind('ticket_uses', TicketUse, 'drop', sanitize=True),
	Kind('ticket_use_perimeters', TicketUsePerimeter, 'drop', keyed=False),
	Kind('ticket_use_restrictions', TicketUseRestriction, 'drop', keyed=False) ]

kinds = OrderedDict((kind.name, kind) for kind in KINDS)


def check_kinds(kind_list=None):
	'Raise ValueError on inconsistent kind/reference declarations.'
	kind_list = u.init_if_none(kind_list, KINDS)
	names = set(kind.name for kind in kind_list)
	for kind in kind_list:
		fields = set(f.name for f in u.attr.fields(kind.record))
		if kind.keyed != ('id' in fields):
			raise ValueError('Keyed kind/record id-field mismatch: {}'.format(kind.name))
		required = list(ref.field for ref in kind.refs if not ref.optional)
		if (kind.orphans is OrphanPolicy.root) != (not required):
			raise ValueError( 'Orphan policy {} mismatch with required'
				' references {} for kind: {}'.format(kind.orphans.value, required, kind.name) )
		for ref in kind.refs:
			if ref.field not in fields:
				raise ValueError('Unknown reference field: {}.{}'.format(kind.name, ref.field))
			if not ref.polymorphic and ref.target not in names:
				raise ValueError('Unknown reference target: {}.{} -> {}'.format(
					kind.name, ref.field, ref.target ))
			if ref.item and ref.optional:
				raise ValueError('Item-references cannot be optional: {}.{}'.format(kind.name, ref.field))
			if ref.weight is not None and (ref.polymorphic or not kind.keyed):
				raise ValueError('Only keyed, fixed-target references can be weighted: {}.{}'.format(
					kind.name, ref.field ))

check_kinds()


def content_key(record):
	'Structural content of a record, excluding its id, for deduplication.'
	return tuple( (f.name, u.freeze(getattr(record, f.name)))
		for f in u.attr.fields(record.__class__) if f.name != 'id' )
