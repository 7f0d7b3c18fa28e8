from decimal import Decimal

import pytest

from app.exceptions import Forbidden, NotFound
from applications.gigs import services
from applications.gigs.models import Gig, GigCategory, PackageTier
from applications.gigs.schemas import GigIn, GigUpdate
from tests.conftest import package


def gig_in(title="I will write your blog post", price=30, category=GigCategory.WRITING_TRANSLATION) -> GigIn:
    return GigIn(
        title=title,
        description="SEO friendly articles",
        category=category,
        subcategory="Articles",
        pricing={"basic": package(price), "premium": package(price * 3, 3, title="Premium")},
    )


class TestGigModel:

    async def test_starting_price_follows_basic_tier(self, seller):
        gig = await services.create_gig(seller, gig_in(price=30))
        assert gig.starting_price == Decimal("30")

        await services.update_gig(str(gig.id), seller, GigUpdate(pricing={"basic": package(45)}))
        await gig.refresh_from_db()
        assert gig.starting_price == Decimal("45")

    async def test_package_lookup(self, gig):
        assert gig.package(PackageTier.BASIC)["price"] == 150
        assert gig.package("standard")["price"] == 300
        assert gig.package(PackageTier.PREMIUM) is None
        assert gig.package(PackageTier.CUSTOM) is None


class TestGigServices:

    async def test_only_owner_updates(self, seller, make_user, gig):
        other = await make_user()
        with pytest.raises(Forbidden):
            await services.update_gig(str(gig.id), other, GigUpdate(title="Mine now"))
        with pytest.raises(Forbidden):
            await services.delete_gig(str(gig.id), other)

    async def test_pause_hides_from_listing(self, seller, gig):
        await services.update_gig(str(gig.id), seller, GigUpdate(is_paused=True))
        gigs, pagination = await services.list_gigs()
        assert gigs == []
        assert pagination["total"] == 0
        assert [g.id for g in await services.my_gigs(seller)] == [gig.id]

    async def test_filters_and_sort(self, seller):
        await services.create_gig(seller, gig_in("Cheap blog post", 10))
        await services.create_gig(seller, gig_in("Premium blog post", 90))
        await services.create_gig(seller, gig_in("Logo design", 50, GigCategory.GRAPHIC_DESIGN))

        writing, _ = await services.list_gigs(category=GigCategory.WRITING_TRANSLATION, sort="price_desc")
        assert [g.title for g in writing] == ["Premium blog post", "Cheap blog post"]

        found, _ = await services.list_gigs(search="logo")
        assert [g.title for g in found] == ["Logo design"]

        ranged, _ = await services.list_gigs(min_price=Decimal("20"), max_price=Decimal("60"))
        assert [g.title for g in ranged] == ["Logo design"]

        first_page, pagination = await services.list_gigs(sort="price_asc", page=1, limit=2)
        assert [g.title for g in first_page] == ["Cheap blog post", "Logo design"]
        assert pagination["pages"] == 2

    async def test_detail_counts_impressions(self, gig):
        await services.get_gig(str(gig.id))
        fetched = await services.get_gig(str(gig.id))
        assert fetched.freelancer.username == "seller"
        await gig.refresh_from_db()
        assert gig.impressions == 2

    async def test_delete(self, seller, gig):
        await services.delete_gig(str(gig.id), seller)
        assert await Gig.all().count() == 0
        with pytest.raises(NotFound):
            await services.get_gig(str(gig.id))
