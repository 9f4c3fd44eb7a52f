import os
import sys
import django
import random
from decimal import Decimal
from faker import Faker

# Add project root to Python path
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

# Set up Django environment
os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'cellflip_marketplace.settings')
django.setup()

from core.bidding import place_bid
from core.exceptions import MarketplaceError
from core.lifecycle import approve_listing, reject_listing, submit_listing
from core.models import User

fake = Faker('en_IN')

CITIES = ['Bengaluru', 'Mumbai', 'Delhi', 'Hyderabad', 'Pune', 'Chennai']

DEVICES = {
    'Apple': ['iPhone 13', 'iPhone 14', 'iPhone 15 Pro'],
    'Samsung': ['Galaxy S22', 'Galaxy S23', 'Galaxy A54'],
    'OnePlus': ['OnePlus 11', 'OnePlus Nord 3'],
    'Google': ['Pixel 7', 'Pixel 8'],
}


def fake_phone_number():
    return f'+91{random.choice("6789")}{fake.unique.numerify("#########")}'


def fake_imei():
    """Random IMEI with a valid Luhn check digit."""
    body = [random.randint(0, 9) for _ in range(14)]
    total = 0
    for index, digit in enumerate(reversed(body)):
        if index % 2 == 0:
            digit *= 2
            if digit > 9:
                digit -= 9
        total += digit
    check = (10 - total % 10) % 10
    return ''.join(str(d) for d in body) + str(check)


def create_users(num_clients=10, num_vendors=5, num_agents=4):
    print(f"Creating {num_clients} clients, {num_vendors} vendors and {num_agents} agents...")

    def make_user(role, **extra):
        phone_number = fake_phone_number()
        user = User.objects.create_user(
            username=phone_number,
            first_name=fake.first_name(),
            last_name=fake.last_name(),
            phone_number=phone_number,
            city=random.choice(CITIES),
            role=role,
            **extra
        )
        user.set_unusable_password()
        user.save()
        return user

    clients = [make_user('client') for _ in range(num_clients)]
    vendors = [
        make_user('vendor', business_name=f'{fake.company()} Mobiles', is_approved=random.random() < 0.8)
        for _ in range(num_vendors)
    ]
    agents = [make_user('agent', is_approved=True) for _ in range(num_agents)]

    admin, created = User.objects.get_or_create(
        username='admin',
        defaults={'role': 'admin', 'is_staff': True, 'is_superuser': True},
    )
    if created:
        admin.set_password('admin12345')
        admin.save()

    print(f"Created {len(clients)} clients, {len(vendors)} vendors and {len(agents)} agents.")
    return clients, vendors, agents, admin


def create_listings(clients, admin):
    print("Creating listings...")
    listings = []

    for client in clients:
        # Each client lists 0-2 devices
        for _ in range(random.randint(0, 2)):
            brand = random.choice(list(DEVICES))
            listing = submit_listing(
                client,
                brand=brand,
                device_model=random.choice(DEVICES[brand]),
                storage_capacity=random.choice(['64GB', '128GB', '256GB']),
                color=fake.color_name(),
                condition=random.choice(['excellent', 'good', 'fair', 'poor']),
                asking_price=Decimal(random.randint(80, 900) * 100),
                description=fake.sentence(),
                imei1=fake_imei(),
                pickup_street=fake.street_address(),
                pickup_city=client.city,
                pickup_state=fake.state(),
                pickup_pincode=fake.numerify('5#####'),
            )

            roll = random.random()
            if roll < 0.7:
                listing = approve_listing(listing, admin, comments='Looks good.')
            elif roll < 0.8:
                listing = reject_listing(listing, admin, reason='Photos do not match the device.')
            listings.append(listing)

    print(f"Created {len(listings)} listings.")
    return listings


def create_bids(listings, vendors):
    print("Creating bids...")
    approved_vendors = [v for v in vendors if v.is_approved]
    placed = 0

    for listing in listings:
        if listing.status != 'bidding_active' or not approved_vendors:
            continue

        amount = listing.asking_price * Decimal('0.6')
        for _ in range(random.randint(0, 4)):
            amount = (amount * Decimal(random.uniform(1.02, 1.15))).quantize(Decimal('1'))
            try:
                place_bid(listing, random.choice(approved_vendors), amount, message=fake.sentence())
                placed += 1
            except MarketplaceError as e:
                print(f"  Skipped bid on listing {listing.id}: {e.detail}")
                break

    print(f"Placed {placed} bids.")


def main():
    print("Starting database population...")

    clients, vendors, agents, admin = create_users(num_clients=20, num_vendors=8, num_agents=5)

    listings = create_listings(clients, admin)

    create_bids(listings, vendors)

    print("Database population completed successfully!")


if __name__ == '__main__':
    main()
