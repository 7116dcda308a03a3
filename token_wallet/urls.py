"""URL routing for the wallet API.


The /api/ namespace exposes wallet operations, fee status reads, the wallet
action gate and the batch trigger called by the external scheduler.
"""

from django.contrib import admin
from django.urls import path, include


urlpatterns = [
	path("admin/", admin.site.urls),
	path("api/", include("api.urls")),
]
