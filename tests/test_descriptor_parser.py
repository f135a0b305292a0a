import json

import pytest

from job_engine.descriptor_parser import DescriptorParser, MAX_VEHICLES, split_top_level
from job_engine.models import IssueCode, PropertyType, ServiceKind


@pytest.fixture
def parser(catalog):
    return DescriptorParser(catalog)


def codes(item):
    return [issue.code for issue in item.issues]


class TestSplitTopLevel:

    def test_separators_inside_brackets_are_kept(self):
        text = "Home Cleaning (Fridge Cleaning, Oven Cleaning) [2 bed; 1 bath]; Mobile Car Wash\nLaundry"
        assert split_top_level(text) == [
            "Home Cleaning (Fridge Cleaning, Oven Cleaning) [2 bed; 1 bath]",
            "Mobile Car Wash",
            "Laundry",
        ]

    def test_empty_parts_are_dropped(self):
        assert split_top_level(" , ;\n") == []


class TestTextDescriptors:

    def test_services_without_tiers_use_defaults(self, parser):
        items = parser.parse("Home Cleaning, Mobile Car Wash")

        assert [(item.service, item.tier) for item in items] == [
            (ServiceKind.HOME_CLEANING, "Refresh Clean"),
            (ServiceKind.MOBILE_CAR_WASH, "Express Shine"),
        ]
        assert [item.original_index for item in items] == [0, 1]
        assert all(IssueCode.TIER_DEFAULTED in codes(item) for item in items)
        assert not any(item.needs_review for item in items)

    def test_full_grammar(self, parser):
        items = parser.parse(
            "Home Cleaning - Signature Deep Clean (Refrigerator Cleaning, Oven Cleaning) [2 bed, 1 bath, Apartment]"
        )

        assert len(items) == 1
        item = items[0]
        assert item.tier == "Signature Deep Clean"
        assert item.add_on_names == ["Fridge Cleaning", "Oven Cleaning"]
        assert item.attributes.bedrooms == 2
        assert item.attributes.bathrooms == 1
        assert item.attributes.property_type == PropertyType.APARTMENT_LOFT
        assert item.issues == []

    def test_vehicle_attributes(self, parser):
        item = parser.parse("Car Wash: Supreme Shine (Clay Bar Treatment) [SUV, 2 cars]")[0]

        assert item.service == ServiceKind.MOBILE_CAR_WASH
        assert item.tier == "Supreme Shine"
        assert item.attributes.vehicle_type == "SUV"
        assert item.attributes.vehicle_count == 2

    def test_vehicle_count_is_capped(self, parser):
        item = parser.parse("Mobile Car Wash - Express Shine [5 vehicles]")[0]

        assert item.attributes.vehicle_count == MAX_VEHICLES
        assert IssueCode.UNKNOWN_ATTRIBUTE in codes(item)

    def test_add_on_quantity(self, parser):
        item = parser.parse("Laundry - Express (Eco-friendly Detergent x2) [3 Family bags]")[0]

        assert item.tier == "Express Service"
        assert item.add_ons[0].name == "Eco-friendly Detergent"
        assert item.add_ons[0].quantity == 2
        assert item.attributes.bags[0].bag_type == "Family"
        assert item.attributes.total_bags == 3

    def test_bare_tier_name_identifies_service(self, parser):
        item = parser.parse("Supreme Shine")[0]
        assert item.service == ServiceKind.MOBILE_CAR_WASH
        assert item.tier == "Supreme Shine"

    def test_unknown_attribute_is_reported(self, parser):
        item = parser.parse("Home Cleaning [2 bed, has a dog]")[0]

        assert item.attributes.bedrooms == 2
        assert [issue.subject for issue in item.issues if issue.code == IssueCode.UNKNOWN_ATTRIBUTE] == ["has a dog"]

    def test_unknown_tier_is_kept_and_flagged(self, parser):
        item = parser.parse("Home Cleaning - Platinum Sparkle")[0]

        assert item.tier == "Platinum Sparkle"
        assert item.needs_review
        assert IssueCode.UNMODELED_RULE in codes(item)

    def test_unparseable_entry_does_not_abort_the_order(self, parser):
        items = parser.parse("Mobile Car Wash - Signature Shine, Pool Cleaning, Home Cleaning")

        assert [item.service for item in items] == [
            ServiceKind.MOBILE_CAR_WASH, ServiceKind.UNKNOWN, ServiceKind.HOME_CLEANING,
        ]
        unknown = items[1]
        assert unknown.needs_review
        assert unknown.source_text == "Pool Cleaning"
        assert codes(unknown) == [IssueCode.UNPARSEABLE_LINE_ITEM]

    @pytest.mark.parametrize("descriptor", ["", "   ", None])
    def test_empty_descriptor(self, parser, descriptor):
        assert parser.parse(descriptor) == []


class TestJsonDescriptors:

    def test_booking_form_entries(self, parser):
        descriptor = json.dumps([
            {"service": "Mobile Car Wash", "tier": "Signature Shine", "addons": ["Clay Bar Treatment"],
             "vehicleType": "SUV"},
            {"service": "Home Cleaning", "tier": "Refresh Clean", "addOns": [{"name": "Oven Cleaning"}],
             "bedrooms": 3, "bathrooms": 2, "propertyType": "Condo/Townhouse"},
        ])
        car_wash, cleaning = parser.parse(descriptor)

        assert car_wash.attributes.vehicle_type == "SUV"
        assert car_wash.add_on_names == ["Clay Bar Treatment"]
        assert cleaning.attributes.property_type == PropertyType.CONDO_TOWNHOUSE
        assert cleaning.attributes.bedrooms == 3
        assert cleaning.add_on_names == ["Oven Cleaning"]

    def test_unknown_property_type_is_reported(self, parser):
        descriptor = json.dumps([{"service": "Home Cleaning", "propertyType": "Houseboat"}])
        item = parser.parse(descriptor)[0]

        assert item.attributes.property_type is None
        assert IssueCode.UNKNOWN_PROPERTY_TYPE in codes(item)

    def test_invalid_entry_is_isolated(self, parser):
        descriptor = json.dumps([
            "not an object",
            {"service": "Home Cleaning", "bedrooms": "lots"},
            {"service": "Mobile Car Wash"},
        ])
        items = parser.parse(descriptor)

        assert [item.service for item in items] == [
            ServiceKind.UNKNOWN, ServiceKind.UNKNOWN, ServiceKind.MOBILE_CAR_WASH,
        ]
        assert all(IssueCode.UNPARSEABLE_LINE_ITEM in codes(item) for item in items[:2])

    def test_bracketed_text_that_is_not_json(self, parser):
        items = parser.parse("[Home Cleaning")
        assert items[0].service == ServiceKind.UNKNOWN


class TestLaundryGrouping:

    def test_laundry_entries_are_grouped_at_first_position(self, parser):
        descriptor = json.dumps([
            {"service": "Laundry Service", "tier": "Express Service", "bagType": "Family Bag", "quantity": 2,
             "addons": ["Eco-friendly Detergent"]},
            {"service": "Mobile Car Wash", "tier": "Express Shine"},
            {"service": "Laundry Service", "tier": "Express Service", "bagType": "Delicates Bag",
             "addons": ["Eco-friendly Detergent", "Same-day Pickup"]},
        ])
        items = parser.parse(descriptor)

        assert [item.service for item in items] == [ServiceKind.LAUNDRY_SERVICE, ServiceKind.MOBILE_CAR_WASH]
        laundry = items[0]
        assert laundry.original_index == 0
        assert laundry.original_indexes == [0, 2]
        assert laundry.add_on_names == ["Eco-friendly Detergent", "Same-day Pickup"]
        assert [bag.bag_type for bag in laundry.attributes.bags] == ["Family Bag", "Delicates Bag"]
        assert laundry.attributes.total_bags == 3

    def test_single_laundry_entry_is_untouched(self, parser):
        items = parser.parse("Laundry - Standard [2 bags], Home Cleaning")

        assert items[0].original_indexes == [0]
        assert items[0].attributes.bags[0].bag_type == "Standard"
