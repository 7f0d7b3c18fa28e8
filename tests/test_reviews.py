import pytest

from app.exceptions import Conflict, Forbidden, InvalidTransition, NotFound
from applications.communication.notifications import Notification, NotificationType
from applications.gigs.models import Gig
from applications.orders.models import Order, OrderStatus
from applications.reviews import services
from applications.reviews.models import Review
from applications.user.models import User


@pytest.fixture
def completed_order(make_order):
    async def _make(**extra) -> Order:
        return await make_order(OrderStatus.COMPLETED, **extra)
    return _make


async def review(order: Order, reviewer: User, rating: int, **categories) -> Review:
    return await services.create_review(str(order.id), reviewer, rating, "Great work", categories or None)


# ============================================================================
# AGGREGATION
# ============================================================================

class TestRecomputeRating:

    def test_mean_of_ratings(self):
        gig = Gig(rating=0, total_reviews=0)
        services.recompute_rating(gig, [5, 5, 4, 2])
        assert gig.rating == 4.0
        assert gig.total_reviews == 4

    def test_empty_resets_to_zero(self):
        user = User(rating=4.5, total_reviews=2)
        services.recompute_rating(user, [])
        assert user.rating == 0
        assert user.total_reviews == 0

    def test_fractional_mean(self):
        gig = services.recompute_rating(Gig(), [5, 4])
        assert gig.rating == 4.5


class TestRatingAggregates:

    async def test_reviews_update_gig_and_seller(self, completed_order, buyer, seller, gig):
        for rating in (5, 5, 4, 2):
            await review(await completed_order(), buyer, rating)

        await gig.refresh_from_db()
        await seller.refresh_from_db()
        assert (gig.rating, gig.total_reviews) == (4.0, 4)
        assert (seller.rating, seller.total_reviews) == (4.0, 4)

    async def test_deleting_a_review_rescans(self, completed_order, buyer, seller, gig):
        first = await review(await completed_order(), buyer, 5)
        await review(await completed_order(), buyer, 1)

        await first.delete()

        await gig.refresh_from_db()
        await seller.refresh_from_db()
        assert (gig.rating, gig.total_reviews) == (1.0, 1)
        assert (seller.rating, seller.total_reviews) == (1.0, 1)

    async def test_last_review_deleted(self, completed_order, buyer, gig):
        only = await review(await completed_order(), buyer, 3)
        await only.delete()
        await gig.refresh_from_db()
        assert (gig.rating, gig.total_reviews) == (0, 0)

    async def test_seller_review_rates_the_buyer(self, completed_order, buyer, seller):
        await review(await completed_order(), seller, 3)
        await buyer.refresh_from_db()
        await seller.refresh_from_db()
        assert (buyer.rating, buyer.total_reviews) == (3.0, 1)
        assert (seller.rating, seller.total_reviews) == (0, 0)


# ============================================================================
# CREATION
# ============================================================================

class TestCreateReview:

    async def test_marks_order_and_notifies(self, completed_order, buyer, seller):
        order = await completed_order()
        created = await review(order, buyer, 4, communication=5, buy_again=4, unknown=2)

        assert created.reviewee_id == seller.id
        assert created.categories == {"communication": 5, "buy_again": 4}
        await order.refresh_from_db()
        assert order.buyer_reviewed is True
        assert order.seller_reviewed is False

        received = await Notification.filter(recipient_id=seller.id, type=NotificationType.REVIEW_RECEIVED)
        assert len(received) == 1
        assert received[0].data["rating"] == 4

    async def test_both_parties_may_review(self, completed_order, buyer, seller):
        order = await completed_order()
        await review(order, buyer, 5)
        await review(order, seller, 5)
        await order.refresh_from_db()
        assert order.buyer_reviewed and order.seller_reviewed

    async def test_second_review_conflicts(self, completed_order, buyer):
        order = await completed_order()
        await review(order, buyer, 5)
        with pytest.raises(Conflict):
            await review(order, buyer, 1)
        assert await Review.filter(order_id=order.id).count() == 1

    @pytest.mark.parametrize("status", [OrderStatus.DELIVERED, OrderStatus.CANCELLED, OrderStatus.IN_PROGRESS])
    async def test_only_completed_orders(self, make_order, buyer, status):
        order = await make_order(status)
        with pytest.raises(InvalidTransition):
            await review(order, buyer, 5)

    async def test_stranger_cannot_review(self, completed_order, make_user):
        order = await completed_order()
        with pytest.raises(Forbidden):
            await review(order, await make_user(), 5)

    async def test_unknown_order(self, buyer):
        with pytest.raises(NotFound):
            await services.create_review("5d3f2a9e-0000-4000-8000-000000000000", buyer, 5, "x")


# ============================================================================
# RESPONSES, REPORTS & LISTINGS
# ============================================================================

class TestResponses:

    async def test_reviewee_responds_once(self, completed_order, buyer, seller):
        created = await review(await completed_order(), buyer, 4)

        answered = await services.respond_to_review(str(created.id), seller, "Thanks!")
        assert answered.response["content"] == "Thanks!"

        with pytest.raises(Conflict):
            await services.respond_to_review(str(created.id), seller, "Again")

    async def test_reviewer_cannot_respond(self, completed_order, buyer):
        created = await review(await completed_order(), buyer, 4)
        with pytest.raises(Forbidden):
            await services.respond_to_review(str(created.id), buyer, "Me too")

    async def test_report(self, completed_order, buyer, seller):
        created = await review(await completed_order(), buyer, 1)
        reported = await services.report_review(str(created.id), seller, "Abusive language")
        assert reported.is_reported is True
        assert reported.report_reason == "Abusive language"


class TestListings:

    async def test_gig_reviews_with_distribution(self, completed_order, buyer, gig):
        for rating in (5, 5, 3):
            await review(await completed_order(), buyer, rating)

        page = await services.gig_reviews(str(gig.id), page=1, limit=2)
        assert len(page["reviews"]) == 2
        assert page["pagination"]["total"] == 3
        assert page["pagination"]["pages"] == 2
        assert page["rating_distribution"] == {1: 0, 2: 0, 3: 1, 4: 0, 5: 2}

        fives = await services.gig_reviews(str(gig.id), rating=5)
        assert {r.rating for r in fives["reviews"]} == {5}

    async def test_hidden_reviews_are_not_listed(self, completed_order, buyer, gig):
        created = await review(await completed_order(), buyer, 2)
        await Review.filter(id=created.id).update(is_public=False)
        page = await services.gig_reviews(str(gig.id))
        assert page["reviews"] == []
        assert sum(page["rating_distribution"].values()) == 0

    async def test_user_reviews_given_and_received(self, completed_order, buyer, seller):
        await review(await completed_order(), buyer, 5)
        received = await services.user_reviews(seller.id, "received")
        given = await services.user_reviews(buyer.id, "given")
        assert received["pagination"]["total"] == 1
        assert given["pagination"]["total"] == 1
        assert (await services.user_reviews(seller.id, "given"))["pagination"]["total"] == 0


class TestAnalytics:

    async def test_category_averages(self, completed_order, buyer, seller, gig):
        await review(await completed_order(), buyer, 5, communication=5, service_as_described=4)
        await review(await completed_order(), buyer, 4, communication=4, buy_again=5)

        report = await services.gig_review_analytics(str(gig.id), seller)
        assert report["total_reviews"] == 2
        assert report["average_rating"] == 4.5
        assert report["average_communication"] == 4.5
        assert report["average_service_as_described"] == 4
        assert report["average_buy_again"] == 5

    async def test_hidden_reviews_are_left_out(self, completed_order, buyer, seller, gig):
        await review(await completed_order(), buyer, 5, communication=5)
        hidden = await review(await completed_order(), buyer, 1, communication=1)
        await Review.filter(id=hidden.id).update(is_public=False)

        report = await services.gig_review_analytics(str(gig.id), seller)
        assert report["total_reviews"] == 1
        assert report["average_rating"] == 5
        assert report["average_communication"] == 5

    async def test_owner_only(self, completed_order, buyer, gig):
        await review(await completed_order(), buyer, 5)
        with pytest.raises(Forbidden):
            await services.gig_review_analytics(str(gig.id), buyer)

    async def test_no_reviews_yet(self, seller, gig):
        with pytest.raises(NotFound):
            await services.gig_review_analytics(str(gig.id), seller)
