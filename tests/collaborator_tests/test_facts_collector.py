"""
Facts Collector Tests

Fixed HTML fixtures -> expected PageFacts. No network.
"""

from collaborators.facts_collector import collect_facts


PRODUCT_PAGE = """<!DOCTYPE html>
<html lang="fr">
<head>
  <title>Crest Joggers - Boutique</title>
  <script src="https://cdn.shopify.com/s/files/theme.js"></script>
  <script src="https://static.klaviyo.com/onsite/js/klaviyo.js" async></script>
  <script src="https://www.googletagmanager.com/gtag/js?id=G-1" defer></script>
  <script>window.Shopify = {}; Shopify.theme = {"name": "Dawn", "theme": "Dawn"};</script>
</head>
<body>
  <a class="skip-link" href="#main">Aller au contenu</a>
  <main id="main">
    <h1>Crest Straight Leg Joggers</h1>
    <div class="price">
      <span class="price-item price-item--sale">39,00 €</span>
      <s class="price-item--regular">49,00 €</s>
    </div>
    <span class="price--on-sale"></span>
    <form action="/cart/add" method="post">
      <fieldset class="product-form__input">
        <legend>Taille</legend>
        <input type="radio" name="Size" value="S">
      </fieldset>
      <label for="option-color">Couleur</label>
      <select id="option-color" name="options[Color]"><option>Noir</option></select>
      <button type="submit" name="add" class="product-form__submit">Ajouter au panier</button>
      <p>Paiement sécurisé</p>
    </form>
    <div class="product__description">
      <p>Un jogger coupe droite en coton biologique, pensé pour le quotidien et les
      week-ends. Taille élastique, poches profondes.</p>
    </div>
    <p>Livraison gratuite dès 50 €</p>
    <h2>Détails</h2>
    <h2>Entretien</h2>
    <h3>Composition</h3>
    <img src="a.jpg" alt="Jogger noir de face">
    <img src="b.jpg" alt="">
    <img data-src="c.jpg" loading="lazy">
  </main>
  <form action="/contact#newsletter"><input type="email" placeholder="Votre email"></form>
</body>
</html>
"""


class TestProductPage:

    def setup_method(self):
        self.facts = collect_facts(PRODUCT_PAGE)

    def test_offer(self):
        pdp = self.facts.pdp
        assert pdp.title == "Crest Straight Leg Joggers"
        assert pdp.price == "39,00 €"
        assert pdp.currency == "€"
        assert pdp.has_sale_price is True
        assert pdp.regular_price == "49,00 €"

    def test_add_to_cart(self):
        pdp = self.facts.pdp
        assert pdp.has_atc_button is True
        assert pdp.atc_button_count == 1
        assert pdp.atc_text == "Ajouter au panier"
        assert pdp.in_stock is True

    def test_variants(self):
        pdp = self.facts.pdp
        assert pdp.has_variant_selector is True
        assert set(pdp.variant_types) == {"Taille", "Couleur"}

    def test_description(self):
        pdp = self.facts.pdp
        assert pdp.has_description is True
        assert pdp.description_length > 50

    def test_browser_only_facts_stay_unknown(self):
        assert self.facts.pdp.sticky_atc_mobile is None
        assert self.facts.pdp.variant_selection_clicks is None
        assert self.facts.technical.lcp_ms is None

    def test_structure(self):
        structure = self.facts.structure
        assert structure.h1_count == 1
        assert structure.main_h1_text == "Crest Straight Leg Joggers"
        assert structure.h2_count == 2
        assert structure.h3_count == 1
        assert structure.image_count == 3
        assert structure.images_without_alt == 2
        assert structure.images_with_lazy_load == 1
        assert structure.form_count == 2
        assert structure.has_newsletter_form is True

    def test_trust_signals(self):
        structure = self.facts.structure
        assert structure.has_shipping_info is True
        assert structure.has_return_policy is False
        assert structure.has_reviews_section is False
        assert structure.trust_badges_near_atc is True

    def test_technical(self):
        technical = self.facts.technical
        assert technical.is_shopify is True
        assert technical.theme_name == "Dawn"
        assert technical.detected_apps == ("Klaviyo",)
        assert technical.has_klaviyo is True
        assert technical.has_google_analytics is True
        assert technical.has_facebook_pixel is False
        assert technical.script_count == 4
        assert technical.external_script_count == 3
        assert technical.blocking_script_count == 1
        assert technical.has_skip_link is True
        assert technical.lang_attribute == "fr"

    def test_deterministic(self):
        assert collect_facts(PRODUCT_PAGE) == self.facts


class TestSparsePages:

    def test_empty_document(self):
        facts = collect_facts("")
        assert facts.pdp.has_atc_button is False
        assert facts.pdp.in_stock is None
        assert facts.structure.h1_count == 0
        assert facts.technical.lang_attribute is None
        assert facts.technical.detected_apps == ()

    def test_sold_out(self):
        facts = collect_facts(
            "<html><body><h1>P</h1><button name='add'>Add</button>"
            "<p>Sold out</p></body></html>"
        )
        assert facts.pdp.has_atc_button is True
        assert facts.pdp.in_stock is False

    def test_review_apps_are_sorted(self):
        facts = collect_facts(
            "<script src='https://cdn.judge.me/widget.js'></script>"
            "<script src='https://loox.io/widget.js'></script>"
        )
        assert facts.technical.detected_apps == ("Judge.me", "Loox")

    def test_reviews_section_by_id(self):
        facts = collect_facts("<div id='shopify-product-reviews'></div>")
        assert facts.structure.has_reviews_section is True

    def test_unclosed_heading(self):
        facts = collect_facts("<h1>Only heading")
        assert facts.structure.main_h1_text == "Only heading"

    def test_text_in_scripts_is_ignored(self):
        facts = collect_facts("<script>var t = 'free shipping';</script><p>Hello</p>")
        assert facts.structure.has_shipping_info is False
