"""
Routes for the organizations blueprint.

Covers the organization record itself, its members, pending
invitations and API keys.  Read routes require organization access;
mutations are further checked by the organization service.
"""

from flask import current_app, jsonify
from flask_login import current_user, login_required

from readiness import rbac
from readiness.blueprints.organizations import bp
from readiness.decorators import organization_access_required, permission_required
from readiness.services import api_key_service, organization_service
from readiness.utils import get_json_body


# =========================================================================
# Organizations
# =========================================================================


@bp.route("", methods=["GET"])
@login_required
def list_organizations():
    """Organizations visible to the caller."""
    orgs = organization_service.list_organizations_for_user(current_user)
    return jsonify({"organizations": [o.to_dict() for o in orgs]})


@bp.route("", methods=["POST"])
@login_required
def create_organization():
    """Create an organization owned by the caller."""
    org = organization_service.create_organization(current_user, get_json_body())
    return jsonify({"organization": org.to_dict()}), 201


@bp.route("/<int:org_id>", methods=["GET"])
@login_required
@permission_required(rbac.ORG_VIEW_OWN, rbac.ORG_VIEW_ALL)
@organization_access_required("org_id")
def get_organization(org_id):
    org = organization_service.get_organization_or_404(org_id)
    return jsonify({"organization": org.to_dict()})


@bp.route("/<int:org_id>", methods=["PUT"])
@login_required
@permission_required(rbac.ORG_EDIT_OWN, rbac.ORG_EDIT_ALL)
@organization_access_required("org_id")
def update_organization(org_id):
    org = organization_service.update_organization(
        current_user, org_id, get_json_body()
    )
    return jsonify({"organization": org.to_dict()})


@bp.route("/<int:org_id>", methods=["DELETE"])
@login_required
def delete_organization(org_id):
    """Soft-delete; system admins and owners only."""
    organization_service.delete_organization(current_user, org_id)
    return jsonify({"message": "Organization deleted."})


@bp.route("/<int:org_id>/overview")
@login_required
@permission_required(rbac.ORG_VIEW_OWN, rbac.ORG_VIEW_ALL)
@organization_access_required("org_id")
def organization_overview(org_id):
    """Headline counts and recent activity for the organization page."""
    return jsonify(organization_service.get_overview(org_id))


# =========================================================================
# Members
# =========================================================================


@bp.route("/<int:org_id>/members", methods=["GET"])
@login_required
@organization_access_required("org_id")
def list_members(org_id):
    members = organization_service.list_members(org_id)
    return jsonify({"members": [m.to_dict() for m in members]})


@bp.route("/<int:org_id>/members", methods=["POST"])
@login_required
def add_member(org_id):
    data = get_json_body()
    member = organization_service.add_member(
        current_user,
        org_id,
        user_id=data.get("userId"),
        email=data.get("email"),
        role=data.get("role") or "member",
    )
    return jsonify({"member": member.to_dict()}), 201


@bp.route("/<int:org_id>/members/<int:user_id>", methods=["PUT"])
@login_required
def update_member(org_id, user_id):
    member = organization_service.update_member_role(
        current_user, org_id, user_id, get_json_body().get("role")
    )
    return jsonify({"member": member.to_dict()})


@bp.route("/<int:org_id>/members/<int:user_id>", methods=["DELETE"])
@login_required
def remove_member(org_id, user_id):
    organization_service.remove_member(current_user, org_id, user_id)
    return jsonify({"message": "Member removed."})


# =========================================================================
# Invitations
# =========================================================================


@bp.route("/<int:org_id>/invitations", methods=["GET"])
@login_required
def list_invitations(org_id):
    invitations = organization_service.list_invitations(current_user, org_id)
    return jsonify({"invitations": [i.to_dict() for i in invitations]})


@bp.route("/<int:org_id>/invitations", methods=["POST"])
@login_required
def create_invitation(org_id):
    """
    Invite an email address.

    The token is returned once together with the accept URL; delivery
    to the invitee happens outside this service.
    """
    data = get_json_body()
    invitation = organization_service.create_invitation(
        current_user,
        org_id,
        email=data.get("email"),
        role=data.get("role") or "member",
        message=data.get("message"),
    )
    body = invitation.to_dict()
    body["token"] = invitation.token
    base_url = current_app.config.get("APP_BASE_URL", "").rstrip("/")
    body["acceptUrl"] = f"{base_url}/invitations/{invitation.token}"
    return jsonify({"invitation": body}), 201


@bp.route("/<int:org_id>/invitations/<int:invitation_id>", methods=["DELETE"])
@login_required
def revoke_invitation(org_id, invitation_id):
    organization_service.revoke_invitation(current_user, org_id, invitation_id)
    return jsonify({"message": "Invitation revoked."})


@bp.route("/invitations/<token>/accept", methods=["POST"])
@login_required
def accept_invitation(token):
    member = organization_service.accept_invitation(current_user, token)
    return jsonify({"member": member.to_dict()})


# =========================================================================
# API keys
# =========================================================================


@bp.route("/<int:org_id>/api-keys", methods=["GET"])
@login_required
def list_api_keys(org_id):
    keys = api_key_service.list_keys(current_user, org_id)
    return jsonify({"apiKeys": [k.to_dict() for k in keys]})


@bp.route("/<int:org_id>/api-keys", methods=["POST"])
@login_required
def create_api_key(org_id):
    """Issue a key; the plaintext ``key`` is only ever returned here."""
    data = get_json_body()
    api_key, plaintext = api_key_service.create_key(
        current_user,
        org_id,
        name=data.get("name"),
        scopes=data.get("scopes"),
        expires_in_days=data.get("expiresInDays"),
    )
    body = api_key.to_dict()
    body["key"] = plaintext
    return jsonify({"apiKey": body}), 201


@bp.route("/<int:org_id>/api-keys/<int:key_id>", methods=["DELETE"])
@login_required
def revoke_api_key(org_id, key_id):
    api_key_service.revoke_key(current_user, org_id, key_id)
    return jsonify({"message": "API key revoked."})
