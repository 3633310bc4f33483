from dealbot.services.deal_parser import is_generic_name, parse_deals

LABELLED_REPLY = """Here are some deals near Marina Bay:

1. **Business Name**: Toast Box
   - **Address**: 10 Bayfront Ave, #B2-01, Singapore 018956
   - **Deal Details**: 1-for-1 kaya toast set before 11am
   - **Contact**: +65 6688 8888
   - **Validity**: Until 31 Oct
   - **Social media source:** Instagram
   - **Source**: https://www.instagram.com/p/toastbox123/

2. **Business Name**: Din Tai Fung
   - **Address**: 2 Bayfront Ave, Singapore 018972
   - **Deal Details**: 20% off xiao long bao for DBS cardholders
   - **Validity**: Weekdays only

3. **Business Name**: Deal 3
   - **Deal Details**: Something generic
"""

BOLD_REPLY = """1. **Lau Pa Sat**
   - Address: 18 Raffles Quay, Singapore 048582
   - Weekday lunch promotion: $5 satay sets
   - Found on tiktok

2. **Business 2**
   - 10% discount

3. **Spago**
   - 1 Bayfront Ave, Singapore
"""


def test_labelled_items_are_parsed():
    deals = parse_deals(LABELLED_REPLY, "food")

    assert [d.business_name for d in deals] == ["Toast Box", "Din Tai Fung"]
    toast = deals[0]
    assert toast.address == "10 Bayfront Ave, #B2-01, Singapore 018956"
    assert toast.offer == "1-for-1 kaya toast set before 11am"
    assert toast.description == toast.offer
    assert toast.contact == "+65 6688 8888"
    assert toast.validity == "Until 31 Oct"
    assert toast.social_media_source == "instagram"
    assert toast.source_url == "https://www.instagram.com/p/toastbox123/"
    assert toast.category == "food"


def test_labelled_item_defaults():
    deals = parse_deals("1. **Business Name**: Kopi Corner\n", "food")

    assert len(deals) == 1
    assert deals[0].offer == "Special Deal"
    assert deals[0].validity == "Limited time"
    assert deals[0].address == "Singapore"
    assert deals[0].social_media_source == "web"
    assert deals[0].source_url is None


def test_bold_name_fallback(location):
    deals = parse_deals(BOLD_REPLY, "food", location)

    assert [d.business_name for d in deals] == ["Lau Pa Sat", "Spago"]
    lau = deals[0]
    assert lau.address == "18 Raffles Quay, Singapore 048582"
    assert lau.offer == "Weekday lunch promotion: $5 satay sets"
    assert lau.social_media_source == "tiktok"
    assert lau.validity == "Limited time offer"

    spago = deals[1]
    assert spago.address == "1 Bayfront Ave, Singapore"
    assert spago.offer == "Special promotion available"


def test_bold_name_address_falls_back_to_location():
    deals = parse_deals("1. **Hawker Hero**\n   - Great chicken rice\n", "food")

    assert deals[0].address == "Near Singapore"


def test_at_most_five_items_and_duplicates_dropped():
    reply = "".join(f"{i}. **Business Name**: Cafe {i % 3}\n" for i in range(1, 9))

    deals = parse_deals(reply, "food")

    assert [d.business_name for d in deals] == ["Cafe 1", "Cafe 2", "Cafe 0"]


def test_unparseable_reply_yields_nothing():
    assert parse_deals("", "food") == []
    assert parse_deals("Sorry, I could not find any deals right now.", "food") == []


def test_generic_names():
    assert is_generic_name("Deal 3")
    assert is_generic_name("business2")
    assert is_generic_name("  ")
    assert not is_generic_name("Deal Makers Cafe")
