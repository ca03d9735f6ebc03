from rest_framework import viewsets, status
from rest_framework.decorators import action
from rest_framework.response import Response
from rest_framework.views import APIView

from blood_requests.models import BloodType, RequestFilters, RequestStatus, Urgency
from ratelimit import RATE_LIMITS, by_action, by_ip

from . import services
from .serializers import (
    BloodRequestSerializer,
    CandidateSerializer,
    DispatchReportSerializer,
    DonorResponseSerializer,
    MatchRequestSerializer,
    MatchResultSerializer,
    RequestCreateSerializer,
    ResponseSubmitSerializer,
    SweepReportSerializer,
)


def _client_ip(request):
    forwarded = request.META.get("HTTP_X_FORWARDED_FOR")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.META.get("REMOTE_ADDR", "unknown")


def _throttle(dispatcher, request, action_name, preset):
    key = by_action(action_name, by_ip(_client_ip(request)))
    dispatcher.check_rate_limit(key, RATE_LIMITS[preset]).raise_for_limit(key)


class BloodRequestViewSet(viewsets.ViewSet):
    """
    Blood requests and everything that happens to them.
    - Create / list / retrieve
    - candidates, dispatch: ranking and notification cycle
    - respond, responses, match: donor answers and the binding match
    - complete, cancel: operator transitions
    """

    def list(self, request):
        params = request.query_params
        filters = RequestFilters(
            status=RequestStatus.parse(params["status"]) if params.get("status") else None,
            blood_type=BloodType.parse(params["blood_type"]) if params.get("blood_type") else None,
            urgency=Urgency.parse(params["urgency"]) if params.get("urgency") else None,
            hospital=params.get("hospital") or None,
        )
        requests = services.get_dispatcher().list_requests(filters)
        return Response(BloodRequestSerializer(requests, many=True).data)

    def create(self, request):
        dispatcher = services.get_dispatcher()
        _throttle(dispatcher, request, "create_request", "API_STRICT")

        serializer = RequestCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        blood_request = dispatcher.create_request(serializer.to_draft_payload())
        return Response(BloodRequestSerializer(blood_request).data, status=status.HTTP_201_CREATED)

    def retrieve(self, request, pk=None):
        blood_request = services.get_dispatcher().get_request(pk)
        return Response(BloodRequestSerializer(blood_request).data)

    @action(detail=True, methods=['get'])
    def candidates(self, request, pk=None):
        """
        Ranked donors for this request at its current escalation level.
        """
        candidates = services.get_dispatcher().rank_candidates(pk)
        return Response(CandidateSerializer(candidates, many=True).data)

    # named notify, a ViewSet method called dispatch would shadow APIView.dispatch
    @action(detail=True, methods=['post'], url_path='dispatch')
    def notify(self, request, pk=None):
        """
        Run one notification cycle now.
        """
        report = services.get_dispatcher().dispatch(pk)
        return Response(DispatchReportSerializer(report).data)

    @action(detail=True, methods=['post'])
    def respond(self, request, pk=None):
        """
        A donor answers. An accept on a pending request tries to bind the donor.
        """
        dispatcher = services.get_dispatcher()
        _throttle(dispatcher, request, "respond", "API_SENSITIVE")

        serializer = ResponseSubmitSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        response = dispatcher.submit_response(
            pk,
            data["donor_id"],
            data["kind"],
            eta_minutes=data.get("eta_minutes"),
            notes=data.get("notes", ""),
        )
        return Response(DonorResponseSerializer(response).data, status=status.HTTP_201_CREATED)

    @action(detail=True, methods=['get'])
    def responses(self, request, pk=None):
        responses = services.get_dispatcher().list_responses(pk)
        return Response(DonorResponseSerializer(responses, many=True).data)

    @action(detail=True, methods=['post'])
    def match(self, request, pk=None):
        """
        Explicitly bind a donor who already accepted. 409 if someone else won.
        """
        serializer = MatchRequestSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        result = services.get_dispatcher().try_match(pk, serializer.validated_data["donor_id"])
        http_status = status.HTTP_200_OK if result.bound else status.HTTP_409_CONFLICT
        return Response(MatchResultSerializer(result).data, status=http_status)

    @action(detail=True, methods=['post'])
    def complete(self, request, pk=None):
        blood_request = services.get_dispatcher().complete_request(pk)
        return Response(BloodRequestSerializer(blood_request).data)

    @action(detail=True, methods=['post'])
    def cancel(self, request, pk=None):
        blood_request = services.get_dispatcher().cancel_request(pk)
        return Response(BloodRequestSerializer(blood_request).data)


class SweepView(APIView):
    """
    The periodic tick, exposed for cron / a scheduler: expire + escalate.
    """

    def post(self, request):
        report = services.get_dispatcher().sweep()
        return Response(SweepReportSerializer(report).data)
