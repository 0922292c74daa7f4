"""orgs/ -- Organization membership, invitations and role gating for SendRec.

Organization CRUD lives elsewhere; this package only consumes the
organization and membership relations to make authorization decisions and
runs the invite flow on top of auth.single_use.

Layer rule: orgs/ may import from auth/ and core/, never from api/.
"""
